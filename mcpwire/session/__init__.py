"""Per-session state and the session manager."""