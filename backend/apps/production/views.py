from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django_filters.rest_framework import DjangoFilterBackend

from apps.inventory.services import InventorySelector
from apps.utils.idempotency import idempotent

from .models import ProductionBatch
from .serializers import (
    ProductionBatchSerializer,
    ScheduleBatchSerializer,
    CompleteBatchSerializer,
    CancelBatchSerializer,
)
from .services import ProductionService


class BatchListCreateAPIView(generics.ListAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = ProductionBatchSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['status', 'batch_type', 'master_product']
    queryset = ProductionBatch.objects.select_related("master_product").prefetch_related(
        "materials__material", "products__product"
    )

    @idempotent()
    def post(self, request):
        serializer = ScheduleBatchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        batch = ProductionService.schedule_batch(
            master_product=data["master_product"],
            planned_quantity=data["planned_quantity"],
            materials=[dict(m) for m in data["materials"]],
            products=[dict(p) for p in data["products"]],
            created_by=request.user,
            batch_type=data["batch_type"],
            density_kg_per_l=data.get("density_kg_per_l"),
            scheduled_date=data.get("scheduled_date"),
        )
        return Response(ProductionBatchSerializer(batch).data, status=status.HTTP_201_CREATED)


class BatchDetailAPIView(generics.RetrieveAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = ProductionBatchSerializer
    queryset = BatchListCreateAPIView.queryset


class StartBatchAPIView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request, pk):
        batch = get_object_or_404(ProductionBatch, pk=pk)
        batch = ProductionService.start_batch(batch, request.user)
        return Response(ProductionBatchSerializer(batch).data)


class CompleteBatchAPIView(APIView):
    permission_classes = [IsAuthenticated]

    @idempotent()
    def post(self, request, pk):
        batch = get_object_or_404(ProductionBatch, pk=pk)
        serializer = CompleteBatchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        batch = ProductionService.complete_batch(
            batch,
            actual_quantity=data["actual_quantity"],
            actual_density_kg_per_l=data["actual_density_kg_per_l"],
            completed_by=request.user,
            consumed={c["material"]: c["quantity"] for c in data["consumed"]},
            produced={p["product"]: p["units"] for p in data["produced"]},
        )
        return Response(ProductionBatchSerializer(batch).data)


class CancelBatchAPIView(APIView):
    permission_classes = [IsAuthenticated]

    @idempotent()
    def post(self, request, pk):
        batch = get_object_or_404(ProductionBatch, pk=pk)
        serializer = CancelBatchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        batch = ProductionService.cancel_batch(batch, serializer.validated_data["reason"], request.user)
        return Response(ProductionBatchSerializer(batch).data)


class BatchDistributionAPIView(APIView):
    """Each output line of the batch against the free weight of its SKU."""
    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        batch = get_object_or_404(ProductionBatch, pk=pk)
        return Response(InventorySelector.batch_distribution(batch))
