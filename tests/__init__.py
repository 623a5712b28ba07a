"""Helpers shared by the tests."""

from typing import Any

from appdef.manifest import APPLICATION_API_VERSION, APPLICATION_KIND, NamedResource


def app_doc(
    name: str,
    components: list[dict[str, Any]],
    namespace: str = "default",
    suspend: bool = False,
) -> dict[str, Any]:
    """Return a raw ApplicationDefinition document."""
    spec: dict[str, Any] = {"components": components}
    if suspend:
        spec["suspend"] = True
    return {
        "apiVersion": APPLICATION_API_VERSION,
        "kind": APPLICATION_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def app_id(name: str, namespace: str = "default") -> NamedResource:
    return NamedResource(APPLICATION_API_VERSION, APPLICATION_KIND, namespace, name)


def configmap_component(name: str, **data: str) -> dict[str, Any]:
    return {"name": name, "type": "configmap", "properties": {"data": data}}
