"""
Console entrypoints, registered with setup through `utils.ENTRYPOINTS`.
"""
