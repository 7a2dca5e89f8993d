"""Client-side chat coordination: state merge, anonymity policy, session."""
