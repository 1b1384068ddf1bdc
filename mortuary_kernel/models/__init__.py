"""ORM models for the mortuary billing kernel."""


def import_all_orm_models() -> None:
    """Import every model module so ``Base.metadata`` knows all tables."""
    import mortuary_kernel.models.case  # noqa: F401
    import mortuary_kernel.models.charge_history  # noqa: F401
    import mortuary_kernel.models.coffin  # noqa: F401
    import mortuary_kernel.models.extra_charge  # noqa: F401
    import mortuary_kernel.models.invoice  # noqa: F401
    import mortuary_kernel.models.payment  # noqa: F401
    import mortuary_kernel.services.sequence_service  # noqa: F401

    try:
        import mortuary_batch.models.batch  # noqa: F401
    except ModuleNotFoundError as exc:
        # Kernel-only deployments ship without the batch package.
        if exc.name != "mortuary_batch":
            raise
