"""
Applies an authorization response to the document: for each `amp-access` element,
evaluate the expression, re-render templates when on, then toggle `amp-access-hide`.
"""
from __future__ import annotations

import asyncio
import logging

from accessgate.access.expr import AccessExprError, evaluate_access_expr
from accessgate.access.ports import ContentElement, HostDocument, JsonTree, TemplateRenderer

logger = logging.getLogger(__name__)

ACCESS_ATTR = "amp-access"
HIDE_ATTR = "amp-access-hide"
TEMPLATE_ATTR = "amp-access-template"


class AuthorizationApplier:
    def __init__(self, document: HostDocument, renderer: TemplateRenderer | None = None) -> None:
        self.document = document
        self.renderer = renderer

    async def apply(self, response: JsonTree) -> None:
        """Waits for document ready, then applies response to all access elements."""
        await self.document.when_ready()
        elements = self.document.access_elements()
        await asyncio.gather(*(self.apply_to_element(el, response) for el in elements))

    async def apply_to_element(self, element: ContentElement, response: JsonTree) -> None:
        expr = element.get_attribute(ACCESS_ATTR) or ""
        try:
            on = evaluate_access_expr(expr, response)
        except AccessExprError as e:
            # A broken expression keeps the element hidden.
            logger.error("access_expr_invalid", extra={"error": str(e)})
            on = False
        if on:
            await self._render_templates(element, response)
        await self._apply_attrs(element, on)

    async def _render_templates(self, element: ContentElement, response: JsonTree) -> None:
        if self.renderer is None:
            return
        templates = element.template_elements()
        if not templates:
            return
        results = await asyncio.gather(
            *(self.renderer.render(element, t, response) for t in templates),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                # Template failure does not block the visibility toggle.
                logger.error("access_template_failed", extra={"error": str(result)})

    async def _apply_attrs(self, element: ContentElement, on: bool) -> None:
        was_on = not element.has_attribute(HIDE_ATTR)
        if on == was_on:
            return

        def mutate() -> None:
            if on:
                element.remove_attribute(HIDE_ATTR)
            else:
                element.set_attribute(HIDE_ATTR, "")

        await self.document.mutate_element(element, mutate)
