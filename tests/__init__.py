"""Test suite for p2p-settlement."""
