"""
Admin Package

Operator diagnostics: request statistics, record listing and cleanup,
configuration report, troubleshooting snapshot and captured logs.
"""
