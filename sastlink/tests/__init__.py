"""Tests for the :mod:`sastlink` application as a whole."""
