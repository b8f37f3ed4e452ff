"""Verified ID issuing tool."""
