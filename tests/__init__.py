"""
Test suite for vrf-raffle

Contains:
- tests/unit/ : Unit tests for the engine, oracle layer, operator, config and API
"""
