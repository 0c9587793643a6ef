"""
Pipeline stages. Each stage is a callable

    stage(ctx: SiteContext, services: OptimizerServices, results: Mapping[str, ModuleResult]) -> ModuleResult

that reads the results of earlier stages but never calls another stage.
"""
