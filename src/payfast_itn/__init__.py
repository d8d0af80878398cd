"""EduDash Pro PayFast ITN service"""

__version__ = "1.0.0"
