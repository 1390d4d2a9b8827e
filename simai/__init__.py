"""Parameters, records, a LogGP memory-bus model, network configuration, routing and flow bookkeeping for simulating collective communication in AI training clusters."""

__version__ = "0.1.0"