"""
Pytest configuration for agent knowledge tests.

Sets the environment before any project module is imported and puts the
project root and the shared test fakes on the import path.
"""

import os
import sys

# Environment setup before any imports
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_LEVEL"] = "WARNING"
# Set a mock API key to satisfy config validation (tests never call the API)
os.environ["OPENAI_API_KEY"] = "sk-test-mock-key-for-unit-tests-only"

# Ensure project root and this directory are in path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))
