"""Service layer: credential manager and its collaborators"""
