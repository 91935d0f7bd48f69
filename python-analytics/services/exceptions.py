class AnalyticsException(Exception):
    """Base das falhas do pipeline de análise"""


class BootstrapError(AnalyticsException):
    """Runtime de cálculo não carregou (falha ou timeout). Pode ser repetido."""


class FetchError(AnalyticsException):
    """Falha na consulta ao banco; aborta o pedido inteiro"""


class AnalysisError(AnalyticsException):
    """Falha ao executar um script de análise"""


class AnalysisCancelled(AnalyticsException):
    """Pedido cancelado pelo chamador entre etapas"""
