"""Output of solver state.

Modules:
    channel_writer  - One HDF5 file per state channel per save
    checkpoint      - Full-state checkpoint/restart
"""
