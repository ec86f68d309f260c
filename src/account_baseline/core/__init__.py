"""Core components for the account baseline applier.

This module contains the foundational components including AWS client
management, configuration handling, and safety mechanisms.
"""
