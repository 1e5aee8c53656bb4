"""Cell rules: payoffs, pairing keys, the record codec and the state machine.

Nothing in this package opens a session, publishes to Redis or knows about
HTTP. Entropy, bound-cell lookups and the minimum stake come in as arguments;
the engine in cell_server.services does the I/O around them.
"""
