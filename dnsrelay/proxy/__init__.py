"""Per-domain upstream routing and helpers for answering DNS clients."""