"""
Traefik label synthesis for Deckhand projects.

Produces the docker labels that make Traefik route a project's domain to its
container. The same rules are used for single-container (image) projects and
for the main service of compose projects, so a project keeps its routing when
it switches runtime.

All functions are pure: inputs are never mutated.
"""

import copy
import re
from typing import Any, Dict, List, Optional

from models.project import Project

# Shared docker network Traefik and all project containers join
NETWORK_NAME = "deckhand"

# Prefix of Deckhand's own management labels
LABEL_PREFIX = "deckhand"
MANAGED_LABEL = f"{LABEL_PREFIX}.managed"
PROJECT_LABEL = f"{LABEL_PREFIX}.project"

REDIRECT_MIDDLEWARE = "redirect-to-https"
CERT_RESOLVER = "letsencrypt"

# Checked in order when no main service is configured
MAIN_SERVICE_CANDIDATES = ("app", "web", "api", "server", "frontend", "backend", "nginx")

_NON_ALNUM = re.compile(r'[^a-z0-9]')
_HYPHEN_RUNS = re.compile(r'-{2,}')


def effective_domain(project: Project, base_domain: str) -> str:
    """Domain the project is served on, or '' when routing is disabled."""
    return project.effective_domain(base_domain)


def sanitize_router_name(name: str) -> str:
    """
    Make a valid Traefik router name.

    Lowercases, replaces everything outside [a-z0-9] with '-', collapses
    repeated '-' and trims them from both ends.

    Examples:
        >>> sanitize_router_name("My_App.v2")
        'my-app-v2'
        >>> sanitize_router_name("--Shop  Front--")
        'shop-front'
    """
    cleaned = _NON_ALNUM.sub('-', name.lower())
    cleaned = _HYPHEN_RUNS.sub('-', cleaned)
    return cleaned.strip('-')


def is_local_domain(domain: str) -> bool:
    """localhost domains are served over plain HTTP without certificates."""
    return domain == "localhost" or domain.endswith(".localhost")


def management_labels(project: Project) -> Dict[str, str]:
    """Labels identifying a container as owned by a Deckhand project."""
    return {
        MANAGED_LABEL: "true",
        PROJECT_LABEL: project.id,
    }


def generate_traefik_labels(
    project: Project,
    base_domain: str,
    service_name: Optional[str] = None,
) -> Dict[str, str]:
    """
    Generate Traefik routing labels for a project.

    Args:
        project: Project to route
        base_domain: Base domain for derived subdomains
        service_name: Compose service the labels are for; the router is then
            named after '<project>-<service>' instead of the project alone

    Returns:
        Label map, empty when the project has no effective domain
    """
    domain = effective_domain(project, base_domain)
    if not domain:
        return {}

    router_source = f"{project.name}-{service_name}" if service_name else project.name
    router = sanitize_router_name(router_source)
    rule = f"Host(`{domain}`)"

    labels = {
        "traefik.enable": "true",
        "traefik.docker.network": NETWORK_NAME,
        f"traefik.http.services.{router}.loadbalancer.server.port": str(project.effective_port),
    }

    if is_local_domain(domain):
        labels[f"traefik.http.routers.{router}.rule"] = rule
        labels[f"traefik.http.routers.{router}.entrypoints"] = "web"
        return labels

    # Plain HTTP router only redirects
    labels[f"traefik.http.routers.{router}-http.rule"] = rule
    labels[f"traefik.http.routers.{router}-http.entrypoints"] = "web"
    labels[f"traefik.http.routers.{router}-http.middlewares"] = f"{REDIRECT_MIDDLEWARE}@docker"

    labels[f"traefik.http.routers.{router}.rule"] = rule
    labels[f"traefik.http.routers.{router}.entrypoints"] = "websecure"
    labels[f"traefik.http.routers.{router}.tls.certresolver"] = CERT_RESOLVER
    return labels


def find_main_service(compose_doc: Dict[str, Any], override: Optional[str] = None) -> str:
    """
    Pick the compose service that receives routing labels.

    Returns '' when the document has no services.
    """
    services = compose_doc.get("services") or {}
    if override and override in services:
        return override
    for candidate in MAIN_SERVICE_CANDIDATES:
        if candidate in services:
            return candidate
    for name in services:
        return name
    return ""


def _labels_as_map(labels: Any) -> Dict[str, str]:
    """Convert compose labels (list of KEY=VALUE or mapping) to a mapping."""
    if not labels:
        return {}
    if isinstance(labels, dict):
        return {str(k): "" if v is None else str(v) for k, v in labels.items()}

    result = {}
    for item in labels:
        key, _, value = str(item).partition("=")
        result[key] = value
    return result


def _with_network(networks: Any) -> Any:
    """Return service networks with the shared network added, keeping the form."""
    if isinstance(networks, dict):
        if NETWORK_NAME not in networks:
            networks[NETWORK_NAME] = None
        return networks

    network_list: List[str] = list(networks or [])
    if NETWORK_NAME not in network_list:
        network_list.append(NETWORK_NAME)
    return network_list


def inject_compose_labels(
    project: Project,
    compose_doc: Dict[str, Any],
    base_domain: str,
    main_service: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Return a copy of a compose document wired for Deckhand.

    - the shared network is declared external and joined by every service
      (services using network_mode are left on their own network)
    - user traefik.* labels other than traefik.enable are dropped
    - management labels are set on every service
    - routing labels are set on the main service only

    The input document is not modified.
    """
    doc = copy.deepcopy(compose_doc)
    services = doc.get("services") or {}
    main = find_main_service(doc, main_service or project.main_service)

    networks = doc.get("networks") or {}
    networks[NETWORK_NAME] = {"external": True}
    doc["networks"] = networks

    for name, service in services.items():
        if service is None:
            service = {}
            services[name] = service

        if "network_mode" not in service:
            service["networks"] = _with_network(service.get("networks"))

        labels = {
            key: value
            for key, value in _labels_as_map(service.get("labels")).items()
            if not key.startswith("traefik.") or key == "traefik.enable"
        }
        labels.update(management_labels(project))
        if name == main:
            labels.update(generate_traefik_labels(project, base_domain, service_name=name))
        service["labels"] = labels

    return doc
