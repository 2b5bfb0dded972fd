"""Plain, TCP, TLS and HTTPS DNS upstreams with bootstrap and parallel querying."""