"""Tests for the Grohe Smarthome integration."""
