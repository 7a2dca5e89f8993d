"""Change feed and live channels (real-time fan-out)."""
