"""
Restaurant reservation service: bilingual booking dialogue plus time-slot allocation
"""

__version__ = "1.0.0"
