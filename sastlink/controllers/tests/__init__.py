"""Tests for :mod:`sastlink.controllers`."""
