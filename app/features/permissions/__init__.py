"""
Authorization and capability engine.

Platform roles (admin, manager, member, plus custom roles) are ordered by level.
Every role except admin is confined to its session's active organization.
"""
