class Params:
    """
    All tunable knobs live here so you don't hunt through code.
    """
    def __init__(self, **overrides):
        # Particle count (fixed for the lifetime of a session)
        self.num_particles = 4000
        self.radius = 3.0           # base radius handed to the shape generator
        self.initial_spread = 20.0  # particles start scattered in a cube this wide

        # Physics (per render tick, not per second)
        self.spring = 0.05          # pull toward the target
        self.damping = 0.92         # velocity multiplier per tick, must stay < 1
        self.noise_amp = 0.02       # ambient flow so the formation never freezes

        # Hand interaction
        self.hand_radius = 4.0      # influence radius (world units)
        self.hand_force = 0.5
        self.repulse_gain = 6.0
        self.swirl_gain = 5.0
        self.depth_flatten = 0.2    # z weight in the distance metric

        # Text mode breathing
        self.text_wave_amp = 0.2

        # Whole-formation spin about the vertical axis
        self.idle_spin_rate = 0.05  # rad / s while nobody is interacting
        self.spin_relax = 0.05      # per tick, back toward zero

        # Cursor feedback
        self.cursor_follow = 0.2
        self.cursor_pulse = 0.2

        # Gesture mapping (world plane the hand moves over)
        self.world_width = 20.0
        self.world_height = 16.0
        self.gesture_smoothing = 0.1   # toward the raw pinch / roll targets
        self.neutral_decay = 0.05      # toward scale 1 / rotation 0 when the hand is lost
        self.pinch_closed = 0.3
        self.pinch_open = 0.8
        self.scale_min = 0.5
        self.scale_max = 1.3
        self.hand_size_eps = 1e-6

        # Tracking
        self.camera_index = None       # None => scan the first few devices
        self.tracking_hz = 30.0
        self.hand_model_path = "hand_landmarker.task"
        self.det_conf = 0.5
        self.presence_conf = 0.5
        self.track_conf = 0.5

        # Text shape
        self.default_text = "USER"
        self.max_text_len = 8

        # "numpy" or "taichi"
        self.backend = "numpy"

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown parameter: {key}")
            setattr(self, key, value)


def _pget(p, key, default=None):
    if isinstance(p, dict):
        return p.get(key, default)
    return getattr(p, key, default)
