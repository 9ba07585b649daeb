"""Test fixture package for address-resolver.

Contains fixtures for:
- Geocoding service configuration
- A fake geocoding service transport
"""
