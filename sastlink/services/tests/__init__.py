"""Tests for :mod:`sastlink.services`."""
