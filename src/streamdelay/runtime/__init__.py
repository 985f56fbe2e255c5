"""
Runtime layer - the stream controller and its regions.

Nothing is re-exported here; import from the submodules
(``streamdelay.runtime.controller``, ``streamdelay.runtime.states``, ...).
"""
