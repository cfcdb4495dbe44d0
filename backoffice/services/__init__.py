"""
Service layer — business rules for every back-office entity.

Services receive an explicit AuthContext, raise typed AppError subclasses,
own the transaction (flush during the operation, single commit at the end)
and never touch Flask request state.
"""
