from datetime import datetime

PASSWORD = "Correct-Horse-9!"

# a fixed instant in the middle of a 30-second TOTP step
FIXED_NOW = datetime(2026, 3, 2, 12, 0, 15)
