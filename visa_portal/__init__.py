"""
Visa Portal - Immigration Case Management Core
==============================================

Case lifecycle for an immigration consultancy:
1. Role-based access to cases (client / coordinator / manager / admin)
2. Status pipeline gated on the required document checklist
3. Document upload and replacement on S3-compatible storage
4. Manager assignment and automation hooks on case events
"""

__version__ = "1.0.0"
