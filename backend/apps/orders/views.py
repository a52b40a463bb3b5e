# apps/orders/views.py
from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django_filters.rest_framework import DjangoFilterBackend

from apps.utils.idempotency import idempotent

from .models import Order
from .services import OrderService
from .serializers import (
    OrderSerializer,
    OrderListSerializer,
    CreateOrderSerializer,
    SplitOrderSerializer,
    RemarksSerializer,
)


class OrderListCreateAPIView(generics.ListAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = OrderListSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['status', 'customer_name']
    queryset = Order.objects.all()

    @idempotent()
    def post(self, request):
        serializer = CreateOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = OrderService.create_order(
            customer_name=data["customer_name"],
            lines=[dict(line) for line in data["lines"]],
            created_by=request.user,
            remarks=data.get("remarks"),
        )
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


class OrderDetailAPIView(generics.RetrieveAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = OrderSerializer
    queryset = Order.objects.select_related("parent_order").prefetch_related("details__product")


class OrderActionAPIView(APIView):
    """
    Base for POST /orders/<pk>/<action>/. Subclasses implement perform().
    """
    permission_classes = [IsAuthenticated]

    def perform(self, order, request):
        raise NotImplementedError

    @idempotent()
    def post(self, request, pk):
        order = get_object_or_404(Order, pk=pk)
        result = self.perform(order, request)
        if isinstance(result, Response):
            return result
        order.refresh_from_db()
        return Response(OrderSerializer(order).data)


class AcceptOrderAPIView(OrderActionAPIView):
    def perform(self, order, request):
        OrderService.accept_order(order, request.user)


class ReadyOrderAPIView(OrderActionAPIView):
    def perform(self, order, request):
        OrderService.mark_ready_for_dispatch(order, request.user)


class CancelOrderAPIView(OrderActionAPIView):
    def perform(self, order, request):
        serializer = RemarksSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        OrderService.cancel_order(order, request.user, remarks=serializer.validated_data["remarks"])


class SplitOrderAPIView(OrderActionAPIView):
    def perform(self, order, request):
        serializer = SplitOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        new_orders = OrderService.split_order(
            order,
            [dict(line) for line in data["first_lines"]],
            [dict(line) for line in data["second_lines"]],
            request.user,
        )
        return Response(
            {"orders": OrderSerializer(new_orders, many=True).data},
            status=status.HTTP_201_CREATED,
        )


class ReturnOrderAPIView(OrderActionAPIView):
    def perform(self, order, request):
        serializer = RemarksSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        OrderService.return_order(order, request.user, remarks=serializer.validated_data["remarks"])


class RequeueOrderAPIView(OrderActionAPIView):
    def perform(self, order, request):
        OrderService.requeue_order(order, request.user)
