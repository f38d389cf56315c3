"""accounts/ -- Account lifecycle orchestration for the BiloGames account service.

Layer rule: accounts/ imports from auth/ and core/ only.
api/ imports from accounts/, not the other way around.
"""
