import importlib
import pkgutil


def include_routers(app, package_name, package_path):
    """app.<package_name> 아래에서 `router`를 가진 모듈을 찾아 등록합니다 (이름순)."""
    modules = sorted(name for _, name, _ in pkgutil.iter_modules(package_path))
    for module_name in modules:
        module = importlib.import_module(f"app.{package_name}.{module_name}")
        router = getattr(module, "router", None)
        if router is not None:
            app.include_router(router)
