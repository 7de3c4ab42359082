"""API subpackage for the model serving service.

Routes cover health reporting and synchronous prediction. They stay thin
layers over the ``ReadinessGate`` and ``PredictionPipeline`` so business
logic is kept out of transport code.
"""
