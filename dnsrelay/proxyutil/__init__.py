"""TCP framing, UDP socket and IP address helpers."""