"""Presence tracker."""
