"""
Worker-side code imported by generated worker programs.

Kept free of package-level imports: the setup check imports the runtime in
interpreters that may lack the analytics toolkit.
"""
