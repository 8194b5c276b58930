"""State layer.

Authoritative per-device state (:mod:`pygeotrack.state.store`), the pure
policies shared by every reader and state machine
(:mod:`pygeotrack.state.policy`), and transient per-device runtime state
(:mod:`pygeotrack.state.runtime`).
"""
