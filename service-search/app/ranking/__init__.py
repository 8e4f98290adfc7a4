"""Search ranking and result fusion components.

Contents
- ``fusion``: weighted semantic/keyword score fusion with a keyword floor
"""
