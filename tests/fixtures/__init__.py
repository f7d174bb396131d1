"""
Pytest fixtures for the QmKit test suite.

- http_mocking: response builders and scripted HTTPX transports
"""
