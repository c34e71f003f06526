"""Ordered lifecycle step runner."""


def failed(message, error="operation_failed", **extra):
    """Return normalized failure payload."""
    payload = {"ok": False, "error": error, "message": message}
    payload.update(extra)
    return payload


def run_steps(ctx, operation, steps):
    """Run ``(name, func)`` steps in order, stopping at the first failure.

    A step may return None (success without detail) or a result payload; a
    payload with ``ok`` false stops the sequence and is returned as-is.
    Returns a mapping of step name -> payload for the successful run.
    """
    ctx.log_action(f"{operation}-start")
    results = {}
    for step_name, step_func in steps:
        try:
            result = step_func()
        except Exception as exc:
            ctx.log_exception(f"{operation}/{step_name}", exc)
            ctx.log_action(f"{operation}-failed", command=step_name, rejection_message=str(exc)[:500] or "step failed")
            return failed(f"{step_name} failed: {exc}", error=f"{step_name}_failed", step=step_name)
        if isinstance(result, dict) and not result.get("ok", True):
            ctx.log_action(f"{operation}-failed", command=step_name, rejection_message=result.get("message", "")[:500])
            result.setdefault("step", step_name)
            return result
        results[step_name] = result
    ctx.log_action(f"{operation}-done")
    return {"ok": True, "steps": results}
