"""Infrastructure adapters: wire codec, configuration and service clients."""
