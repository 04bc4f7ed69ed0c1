import os

# Cheap hashes and in-memory storage for the whole suite.
os.environ.setdefault("MURMUR_BCRYPT_ROUNDS", "4")
os.environ.setdefault("MURMUR_USE_IN_MEMORY_BACKENDS", "true")
os.environ.setdefault("MURMUR_JWT_SECRET", "test-secret")
