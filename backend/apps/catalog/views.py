from rest_framework import generics, status
from rest_framework.views import APIView
from rest_framework.response import Response

from .models import MasterProduct, Product
from .serializers import MasterProductSerializer, MasterProductCreateSerializer, ProductSerializer
from .services import CatalogService, DETAIL_FIELDS


class MasterProductListCreateAPIView(APIView):
    """
    Product families (FG / RM / PM) with their material stock.
    """

    def get(self, request):
        qs = MasterProduct.objects.select_related("rm_detail", "pm_detail", "fg_detail")
        product_type = request.query_params.get("product_type")
        if product_type:
            qs = qs.filter(product_type=product_type)
        return Response(MasterProductSerializer(qs, many=True).data)

    def post(self, request):
        serializer = MasterProductCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)

        product_type = data.pop("product_type")
        details = {
            field: data.pop(field)
            for field in list(data)
            if field in DETAIL_FIELDS[product_type]
        }
        # Anything left that belongs to another type is ignored
        for field in ("density_kg_per_l", "purchase_cost", "capacity_litres"):
            data.pop(field, None)

        master = CatalogService.create_master_product(product_type=product_type, **data, **details)
        return Response(MasterProductSerializer(master).data, status=status.HTTP_201_CREATED)


class MasterProductDetailAPIView(generics.RetrieveAPIView):
    queryset = MasterProduct.objects.select_related("rm_detail", "pm_detail", "fg_detail")
    serializer_class = MasterProductSerializer


class SkuListCreateAPIView(generics.ListCreateAPIView):
    """
    Sellable package sizes under FG master products. Placeholder SKUs are hidden.
    """
    serializer_class = ProductSerializer
    filterset_fields = ["master_product", "is_active"]
    search_fields = ["product_name", "sku_code"]

    def get_queryset(self):
        return Product.objects.filter(
            is_placeholder=False
        ).select_related("master_product", "packaging").order_by("product_name")

    def perform_create(self, serializer):
        data = serializer.validated_data
        serializer.instance = CatalogService.create_sku(
            master_product=data["master_product"],
            product_name=data["product_name"],
            sku_code=data["sku_code"],
            packaging=data.get("packaging"),
            selling_price=data.get("selling_price", 0),
            min_stock_level=data.get("min_stock_level", 0),
        )
