"""
Execution core: mode resolution, container lifecycle, process supervision,
artifact change detection and path rewriting.
"""
