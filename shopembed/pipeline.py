"""
Stages are composed explicitly around the protected handler.

A stage is called as `stage(service, shop_context, next_stage)` and returns a
response, either its own (redirect, 400, 403, 500) or whatever `next_stage`
returns.  The handler at the end is called as `handler(service, shop_context)`.

    pipeline = compose(handler, verify_signature, negotiate_oauth)
    response = pipeline(service, None)
"""
from functools import partial


def compose(handler, *stages):
    """Wrap `handler` so `stages` run in the given order, first is outermost."""
    for stage in reversed(stages):
        handler = partial(stage, next_stage=handler)
    return handler


def verify_signature(service, shop_context, next_stage):
    error_response = service.verify_signature()
    if error_response:
        return error_response
    return next_stage(service, shop_context)


def negotiate_oauth(service, shop_context, next_stage):
    shop_context, response = service.negotiate()
    if response:
        return response
    return next_stage(service, shop_context)


def verify_session_token(service, shop_context, next_stage):
    shop_context, error_response = service.verify_session_token()
    if error_response:
        return error_response
    return next_stage(service, shop_context)


def verify_proxy_access(service, shop_context, next_stage):
    shop_context, error_response = service.verify_proxy_access()
    if error_response:
        return error_response
    return next_stage(service, shop_context)


def ensure_script_tags(*script_tags):
    """Make a stage that registers `script_tags` for the authenticated shop."""

    def stage(service, shop_context, next_stage):
        if script_tags and shop_context:
            error_response = service.ensure_script_tags(shop_context, script_tags)
            if error_response:
                return error_response
        return next_stage(service, shop_context)

    return stage
