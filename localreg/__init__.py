"""
localreg: run a local Verdaccio registry and point npm or yarn at it for the
lifetime of the server.
"""
