from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django_filters.rest_framework import DjangoFilterBackend

from apps.catalog.models import Product
from apps.utils.exceptions import InvalidMovementError
from apps.utils.idempotency import idempotent

from .filters import InventoryTransactionFilter, StockReservationFilter
from .models import InventoryTransaction, MaterialInward, StockReservation
from .serializers import (
    InventoryTransactionSerializer,
    StockReservationSerializer,
    AvailabilityQuerySerializer,
    StockLevelSerializer,
    MaterialInwardSerializer,
    CreateInwardSerializer,
    MaterialDiscardSerializer,
    CreateDiscardSerializer,
    AdjustmentSerializer,
)
from .services import (
    DiscardService,
    InventorySelector,
    InwardService,
    StockMovementService,
)


class InventoryLedgerAPIView(generics.ListAPIView):
    """
    Stock ledger, newest first. Filter by product (SKU id) or
    master_product (RM/PM id), transaction and reference.
    """
    permission_classes = [IsAuthenticated]
    serializer_class = InventoryTransactionSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_class = InventoryTransactionFilter
    queryset = InventoryTransaction.objects.select_related("created_by")


class StockLevelAPIView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, product_id):
        ref, level = InventorySelector.stock_level(product_id)
        data = StockLevelSerializer({
            "kind": ref.kind.value,
            "id": ref.id,
            "label": level.label,
            "available": level.available,
            "reserved": level.reserved,
            "free": level.free,
            "available_weight": level.available_weight,
            "reserved_weight": level.reserved_weight,
        }).data
        return Response(data)


class LowStockAPIView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response({"results": InventorySelector.low_stock()})


class InwardListCreateAPIView(generics.ListAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = MaterialInwardSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["master_product", "product", "is_reversed", "bill_no"]
    queryset = MaterialInward.objects.select_related("master_product")

    @idempotent()
    def post(self, request):
        serializer = CreateInwardSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        master = InventorySelector.get_master(data["master_product"])
        product = None
        if data.get("product"):
            product = get_object_or_404(Product, pk=data["product"], is_placeholder=False)

        inward = InwardService.create_inward(
            master,
            data["quantity"],
            request.user,
            product=product,
            supplier_name=data["supplier_name"],
            bill_no=data["bill_no"],
            unit_price=data["unit_price"],
            weight_kg=data.get("weight_kg"),
            notes=data["notes"],
            inward_date=data.get("inward_date"),
        )
        return Response(MaterialInwardSerializer(inward).data, status=status.HTTP_201_CREATED)


class ReverseInwardAPIView(APIView):
    permission_classes = [IsAuthenticated]

    @idempotent()
    def post(self, request, pk):
        inward = get_object_or_404(MaterialInward, pk=pk)
        inward = InwardService.reverse_inward(inward, request.user, notes=request.data.get("notes"))
        return Response(MaterialInwardSerializer(inward).data)


class DiscardCreateAPIView(APIView):
    permission_classes = [IsAuthenticated]

    @idempotent()
    def post(self, request):
        serializer = CreateDiscardSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        discard = DiscardService.create_discard(
            data["product_id"], data["quantity"], data["reason"], request.user, notes=data["notes"]
        )
        return Response(MaterialDiscardSerializer(discard).data, status=status.HTTP_201_CREATED)


class AdjustmentCreateAPIView(APIView):
    """
    Manual stock correction. Positive adds, negative removes and fails
    if the shelf holds less than that.
    """
    permission_classes = [IsAuthenticated]

    @idempotent()
    def post(self, request):
        serializer = AdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        row = StockMovementService.record_adjustment(
            data["product_id"],
            data["quantity"],
            request.user,
            weight_kg=data.get("weight_kg"),
            notes=data["notes"],
        )
        return Response(InventoryTransactionSerializer(row).data, status=status.HTTP_201_CREATED)


class ReservationJournalAPIView(generics.ListAPIView):
    """Reserve / release / consume entries per order line, oldest first."""
    permission_classes = [IsAuthenticated]
    serializer_class = StockReservationSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_class = StockReservationFilter
    queryset = StockReservation.objects.all()


class ProductAvailabilityAPIView(APIView):
    """
    Weight view of one SKU. With ?required_weight_kg= it also says whether
    the SKU can cover that weight on its own (DIRECT), only in part
    (INDIRECT, with sibling pack sizes that could) or not at all.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, product_id):
        query = AvailabilityQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        data = InventorySelector.product_availability(product_id)
        required = query.validated_data.get("required_weight_kg")
        if required is not None:
            data["fulfillment"] = InventorySelector.fulfillment_capability(product_id, required)
        return Response(data)


class AlternativeCapacitiesAPIView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, master_id):
        master = InventorySelector.get_master(master_id)
        if master.product_type != master.FINISHED_GOOD:
            raise InvalidMovementError(f"'{master.name}' has no pack sizes, only finished goods do")
        return Response({
            "master_product": master.id,
            "results": InventorySelector.alternative_capacities(master.id),
        })
