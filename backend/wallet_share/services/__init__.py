"""Engine services: profile store, lifecycle, rev-share and maintenance."""
